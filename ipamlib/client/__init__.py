def run():
    from .cli import run
    run()
