from pydantic import BaseModel


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter a client needs from the environment.

    Attributes:
        env_key (str): The raw key, prefixed by the client as ``<TYPE>_<ENGINE>_<KEY>``.
        val_type (str): "string", "number", "bool" or "list".
        default (str | int | float | bool | list | None): Value used when the variable is unset.
            None marks the variable as required.
    """

    env_key: str
    val_type: str = "string"
    default: str | int | float | bool | list | None = None
