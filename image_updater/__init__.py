"""Find newer image tags for docker-compose services and propose them as merge requests."""

__version__ = "0.1.0"
