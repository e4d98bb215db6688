def run():
    from .controller import cli
    cli()
