from taskpilot.main import app

app()
