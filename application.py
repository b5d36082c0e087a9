"""
Elastic Beanstalk entry point for the Kanway FastAPI application.
Elastic Beanstalk looks for a module-level ``application`` object.
"""

from kanway.main import app

application = app

if __name__ == "__main__":
    import uvicorn

    from kanway.config import settings

    uvicorn.run(application, host=settings.app_host, port=settings.app_port)
