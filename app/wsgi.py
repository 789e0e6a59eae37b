from app.gavel import create_app

app = create_app()
