from hybrid_relay.health.monitor import HealthMonitor, HealthState, LivenessProbe

__all__ = ["HealthMonitor", "HealthState", "LivenessProbe"]
