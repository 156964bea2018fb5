"""Gateway helper tools: DHCP client control, parental-control block lists and multipart webconfig documents."""

__version__ = "1.0.0"