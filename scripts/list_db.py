"""Print the tables and a one-line summary of every stored game-state document."""
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
from sqlalchemy import inspect

import database

load_dotenv()
engine = database.create_db_engine()
print('TABLES:', inspect(engine).get_table_names())
s = database.create_session_factory(engine)()
try:
    for state in database.list_game_states(s):
        stats = json.dumps(state.stats, sort_keys=True)
        custom = state.custom if isinstance(state.custom, list) else []
        print(f"{state.user_id}: updated_at={state.updated_at} day={state.day!r} "
              f"custom={len(custom)} stats={stats}")
finally:
    s.close()
    engine.dispose()
