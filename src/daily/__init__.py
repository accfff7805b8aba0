"""Daily aggregation: roll first-party logs and cached wearable data into one summary per date."""
