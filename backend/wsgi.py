from stitchdesk import create_app

app = create_app()
