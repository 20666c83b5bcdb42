"""
Scout Analytics API

ASGI entry point: `gunicorn scout_analytics.main:app -c gunicorn.conf.py`
"""

from scout_analytics.serving.api import create_app

app = create_app()


if __name__ == "__main__":
    import uvicorn
    from scout_analytics.config import get_settings

    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
