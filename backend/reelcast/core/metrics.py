"""Prometheus metrics for the application"""
from prometheus_client import Counter, Gauge

# Auth metrics
login_attempts_counter = Counter(
    'reelcast_login_attempts_total',
    'Total number of login attempts',
    ['status']
)

# Publishing metrics
posts_published_counter = Counter(
    'reelcast_posts_published_total',
    'Total number of scheduled posts published successfully',
    ['platform']
)

posts_failed_counter = Counter(
    'reelcast_posts_failed_total',
    'Total number of scheduled posts that failed to publish',
    ['platform']
)

cron_runs_counter = Counter(
    'reelcast_cron_runs_total',
    'Total number of publish cron runs',
    ['status']
)

posts_due_gauge = Gauge(
    'reelcast_posts_due',
    'Number of posts picked up by the last publish cron run'
)

# OAuth metrics
oauth_connections_counter = Counter(
    'reelcast_oauth_connections_total',
    'Total number of social account connection attempts',
    ['platform', 'status']
)

# Billing metrics
stripe_webhooks_counter = Counter(
    'reelcast_stripe_webhooks_total',
    'Total number of Stripe webhook events received',
    ['event_type', 'status']
)
