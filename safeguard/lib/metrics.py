"""
Prometheus metrics exporter
"""
import logging
import time
from functools import wraps

from prometheus_client import Counter, Histogram, Gauge, start_http_server

logger = logging.getLogger(__name__)

# Counters
content_classified = Counter('safeguard_content_classified_total', 'Content items classified', ['decision', 'content_type'])
violations_detected = Counter('safeguard_violations_total', 'Reason tags attached to content', ['reason'])
moderation_actions = Counter('safeguard_moderation_actions_total', 'Moderation actions taken', ['action_type', 'source'])
user_transitions = Counter('safeguard_user_transitions_total', 'User status transitions', ['status'])
threats_detected = Counter('safeguard_threats_total', 'Security threats detected', ['threat_type', 'severity'])
ip_blocks = Counter('safeguard_ip_blocks_total', 'IP block changes', ['change'])
rate_limit_checks = Counter('safeguard_rate_limit_checks_total', 'Rate limit decisions', ['action', 'outcome'])
lookup_failures = Counter('safeguard_lookup_failures_total', 'Reads that failed open', ['lookup'])
appeal_decisions = Counter('safeguard_appeal_decisions_total', 'Appeal decisions', ['decision'])
compensation_failures = Counter('safeguard_compensation_failures_total', 'Compensating unblocks that exhausted retries')
notification_failures = Counter('safeguard_notification_failures_total', 'Notifications that could not be delivered', ['type'])

# Histograms (for latency)
classification_latency = Histogram('safeguard_classification_duration_seconds', 'Classification duration')
operation_latency = Histogram('safeguard_operation_duration_seconds', 'Engine operation duration', ['operation'])

# Gauges (for current state)
queue_depth = Gauge('safeguard_queue_depth', 'Open review queue entries', ['priority'])
active_blocks = Gauge('safeguard_active_ip_blocks', 'Currently active IP blocks')


class MetricsExporter:
    """Prometheus metrics exporter"""

    def __init__(self, port: int = 8000):
        self.port = port
        self.server_started = False

    def start(self):
        """Start Prometheus HTTP server"""
        if not self.server_started:
            start_http_server(self.port)
            self.server_started = True
            logger.info(f"Prometheus metrics server started on port {self.port}")

    @staticmethod
    def track(operation: str):
        """Decorator to track operation time"""
        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    result = func(*args, **kwargs)
                    operation_latency.labels(operation=operation).observe(time.time() - start_time)
                    return result
                except Exception:
                    operation_latency.labels(operation=f"{operation}_error").observe(time.time() - start_time)
                    raise
            return wrapper
        return decorator

    @staticmethod
    def record_content(decision: str, content_type: str, duration: float):
        content_classified.labels(decision=decision, content_type=content_type).inc()
        classification_latency.observe(duration)

    @staticmethod
    def record_violation(reason: str):
        violations_detected.labels(reason=reason).inc()

    @staticmethod
    def record_action(action_type: str, source: str):
        moderation_actions.labels(action_type=action_type, source=source).inc()

    @staticmethod
    def record_user_transition(status: str):
        user_transitions.labels(status=status).inc()

    @staticmethod
    def record_threat(threat_type: str, severity: str):
        threats_detected.labels(threat_type=threat_type, severity=severity).inc()

    @staticmethod
    def record_ip_block(change: str):
        ip_blocks.labels(change=change).inc()

    @staticmethod
    def record_rate_limit(action: str, outcome: str):
        rate_limit_checks.labels(action=action, outcome=outcome).inc()

    @staticmethod
    def record_lookup_failure(lookup: str):
        lookup_failures.labels(lookup=lookup).inc()

    @staticmethod
    def record_appeal(decision: str):
        appeal_decisions.labels(decision=decision).inc()

    @staticmethod
    def record_compensation_failure():
        compensation_failures.inc()

    @staticmethod
    def record_notification_failure(notification_type: str):
        notification_failures.labels(type=notification_type).inc()

    @staticmethod
    def update_queue_depth(priority: str, depth: int):
        queue_depth.labels(priority=priority).set(depth)

    @staticmethod
    def update_active_blocks(count: int):
        active_blocks.set(count)
