"""Prometheus metrics shared by the HTTP app and the presence engine."""

from prometheus_client import Counter, Gauge, Histogram

# HTTP
api_requests_total = Counter('api_requests_total', 'Total API requests', ['method', 'endpoint', 'status'])
api_request_duration = Histogram('api_request_duration_seconds', 'API request duration')

# Presence engine
socket_events_total = Counter('socket_events_total', 'Inbound socket events', ['event', 'outcome'])
connected_clients = Gauge('connected_clients', 'Open WebSocket connections')
dashboard_broadcasts_total = Counter('dashboard_broadcasts_total', 'Dashboard snapshots broadcast')
reminders_sent_total = Counter('reminders_sent_total', 'Reminders delivered to agents', ['kind'])
reminders_undelivered_total = Counter('reminders_undelivered_total', 'Reminders for agents with no live connection', ['kind'])

# Delivery queue
delivery_queue_depth = Gauge('delivery_queue_depth', 'Records waiting for the analytics sink')
delivery_queue_delivered = Counter('delivery_queue_delivered_total', 'Records written to the analytics sink')
delivery_queue_failures = Counter('delivery_queue_failures_total', 'Failed analytics sink writes')
