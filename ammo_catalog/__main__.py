# ammo_catalog/__main__.py
from .orchestrator import run

run()
