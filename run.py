"""
Application entry point
airsync - Airtable incremental sync service

Usage:
    python run.py

Configuration:
    - Put settings in a .env file or the environment (see airsync/config.py)
    - AIRTABLE_BASE_ID, AIRTABLE_API_KEY and AIRTABLE_TABLES are required
"""
import os
import sys

from airsync import create_app
from airsync.config import get_config

# Pick the configuration class
config_class = get_config()

# Create the application
app = create_app(config_class)

if __name__ == '__main__':
    env = os.environ.get('FLASK_ENV', 'development')
    port = int(os.environ.get('PORT', '8000'))

    # Validate configuration in production
    if env == 'production':
        errors = config_class.validate()
        if errors:
            for error in errors:
                print(f"✗ {error}")
            sys.exit(1)

    service = app.extensions['airsync']

    print("=" * 60)
    print("airsync - Airtable incremental sync")
    print("=" * 60)
    print(f"📌 Address: http://localhost:{port}")
    print(f"📌 API: http://localhost:{port}/api")
    print(f"📌 Environment: {env}")
    print(f"📌 Base: {service.base_id}")
    print(f"📌 Tables: {', '.join(spec.name for spec in service.table_settings) or '(none)'}")
    print(f"📌 CORS origins: {', '.join(config_class.CORS_ORIGINS)}")
    print(f"📌 Rate limit: {config_class.SYNC_MAX_REQUESTS_PER_SEC} requests / {config_class.SYNC_INTERVAL}s")

    if config_class.API_KEY:
        print("🔒 API key auth: enabled")
    else:
        print("⚠️  API key auth: disabled (set API_KEY)")

    print("=" * 60)

    app.run(host='0.0.0.0', port=port, debug=(env == 'development'), use_reloader=False)
