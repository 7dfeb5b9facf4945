from shared.helper.HelperConfig import HelperConfig
from shared.clients.backend.BackendClientInterface import BackendClientInterface


class BackendClientManager:
    """
    Manager class to handle the Backend client based on configuration.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the Backend engine from ENV configuration.

        Returns:
            str: The name of the Backend engine, capitalized (e.g. "Supabase").

        Raises:
            ValueError: If no Backend engine is specified in the configuration.
        """
        engine = self.helper_config.get_string_val("BACKEND_ENGINE", default="")
        if not engine:
            raise ValueError("No Backend engine specified in configuration.")

        # lowercase all and uppercase first letter to match the class name
        engine = engine.strip().lower()
        engine = engine.capitalize()
        return engine

    def _initialize_client(self) -> BackendClientInterface:
        """
        Initializes the Backend client based on the engine specified in the configuration.

        Returns:
            BackendClientInterface: An instance of the Backend client.

        Raises:
            ValueError: If the engine is unsupported or the client cannot be instantiated.
        """
        engine = self._get_engine_from_env()
        className = f"BackendClient{engine}"
        # import the class from shared.clients.backend.{engine}
        try:
            module = __import__(
                f"shared.clients.backend.{engine.lower()}.{className}",
                fromlist=[className],
            )
            client_class = getattr(module, className)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported Backend engine specified: '{engine}'. Error: {e}")

        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated Backend client for engine: %s", engine)
        return client

    def get_client(self) -> BackendClientInterface:
        """
        Returns the instantiated Backend client.
        """
        return self.client
