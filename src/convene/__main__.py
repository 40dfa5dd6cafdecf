from convene.cli.main import cli

cli()
