from shared.helper.HelperConfig import HelperConfig
from shared.clients.realtime.RealtimeClientInterface import RealtimeClientInterface


class RealtimeClientManager:
    """
    Manager class to handle the Realtime client based on configuration.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the Realtime engine from ENV configuration.

        Raises:
            ValueError: If no Realtime engine is specified in the configuration.
        """
        engine = self.helper_config.get_string_val("REALTIME_ENGINE", default="")
        if not engine:
            raise ValueError("No Realtime engine specified in configuration.")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> RealtimeClientInterface:
        """
        Initializes the Realtime client based on the engine specified in the configuration.

        Raises:
            ValueError: If the engine is unsupported.
        """
        engine = self._get_engine_from_env()
        className = f"RealtimeClient{engine}"
        try:
            module = __import__(
                f"shared.clients.realtime.{engine.lower()}.{className}",
                fromlist=[className],
            )
            client_class = getattr(module, className)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported Realtime engine specified: '{engine}'. Error: {e}")

        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated Realtime client for engine: %s", engine)
        return client

    def get_client(self) -> RealtimeClientInterface:
        return self.client
