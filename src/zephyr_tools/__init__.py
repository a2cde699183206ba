"""zephyr-tools: Zephyr RTOS SDK provisioning and west build front end."""

__version__ = "0.1.0"
