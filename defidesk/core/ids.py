"""ID generation utilities."""
import uuid


def new_id(prefix: str) -> str:
    """Generate a UUID4-based ID with prefix."""
    return f"{prefix}{uuid.uuid4().hex}"


def new_command_id() -> str:
    """Executable command id. Every build gets a fresh one, retries included."""
    return new_id("cmd_")
