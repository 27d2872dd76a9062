from app.apc import create_app

app = create_app()
