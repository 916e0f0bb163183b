from gatekeeper.interfaces import EventProcessor


class NullEventProcessor(EventProcessor):
    """Used in local mode and when logging is disabled: accepts every event and sends nothing."""

    def send_event(self, event):
        pass

    def log_gate_exposure(self, user, gate_name, result, is_manual=False):
        pass

    def log_config_exposure(self, user, config_name, result, is_manual=False):
        pass

    def log_layer_exposure(self, user, layer_name, parameter_name, result, is_manual=False):
        pass

    def log_custom_event(self, user, event_name, value=None, metadata=None):
        pass

    def flush(self):
        pass

    def flush_sync(self, timeout=None):
        pass

    def stop(self):
        pass
