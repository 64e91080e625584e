from app.qa import create_app

app = create_app()
