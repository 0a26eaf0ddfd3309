"""Display formatting. Reports carry raw numbers; units are applied here."""


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def format_rate(bytes_per_sec: float) -> str:
    """Format a throughput such as 1.25 MB/s."""
    if bytes_per_sec >= 1024**2:
        return f"{bytes_per_sec / 1024**2:.2f} MB/s"
    return f"{bytes_per_sec / 1024:.1f} KB/s"


def format_uptime(seconds: float) -> str:
    days = int(seconds // 86400)
    hours = int((seconds % 86400) // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    if days > 0:
        return f"{days} days, {hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_temperature(celsius: float | None) -> str:
    if celsius is None:
        return "N/A"
    return f"{celsius:.1f}°C"


def format_remaining(minutes: int | None) -> str:
    if minutes is None:
        return "--"
    return f"{minutes // 60}h {minutes % 60:02d}m"


def usage_bar(percent: float, width: int = 20, color: str = "green") -> str:
    """Rich-markup bar such as [█████░░░], capped at `width` cells."""
    filled = max(0, min(int(percent / (100 / width)), width))
    bar = f"[{color}]" + "█" * filled + f"[/{color}]" + "[dim]" + "░" * (width - filled) + "[/dim]"
    # Escaped bracket so Rich does not read the bar container as markup
    return f"\\[{bar}]"
