from devfiles.main import create_app

application = create_app()
