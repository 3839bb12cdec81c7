"""Reelcast: video editing and social publishing backend"""
