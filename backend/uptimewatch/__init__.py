"""UptimeWatch - HTTP uptime monitoring with escalating alerts."""
