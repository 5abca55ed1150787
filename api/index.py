import sys
import os

from mangum import Mangum

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ledger.api import app  # noqa: E402

app.root_path = "/api"

handler = Mangum(app)
