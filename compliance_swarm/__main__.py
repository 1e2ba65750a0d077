from compliance_swarm.main import cli

cli()
