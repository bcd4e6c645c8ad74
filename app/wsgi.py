from app.studiofinder import create_app

app = create_app()
