from ledgerlink import create_app

app = create_app()
