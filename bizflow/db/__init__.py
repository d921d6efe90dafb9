from bizflow.db.db_client import DBClient

db_client = DBClient()
