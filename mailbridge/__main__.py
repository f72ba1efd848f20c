from mailbridge.cli.main import cli

cli()
