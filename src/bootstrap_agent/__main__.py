from bootstrap_agent.main import run

run()
