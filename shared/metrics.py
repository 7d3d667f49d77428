# shared/metrics.py

from prometheus_client import Counter, Gauge

ADS_CREATED = Counter('group_ads_created_total', 'Total announcements created')
ADS_REMOVED = Counter('group_ads_removed_total', 'Total announcements removed')
ADS_ACTIVE = Gauge('group_ads_active', 'Number of active announcements')
DELIVERIES = Counter('group_ads_deliveries_total', 'Announcement delivery attempts', ['status'])
SYNC_CYCLES = Counter('group_ads_sync_cycles_total', 'Reconciliation cycles', ['status'])
REMOTE_REQUESTS = Counter('group_ads_remote_requests_total', 'Remote API calls', ['operation', 'outcome'])
