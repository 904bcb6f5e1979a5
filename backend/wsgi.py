from billdesk import create_app

app = create_app()
