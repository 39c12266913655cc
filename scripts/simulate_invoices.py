"""Fire concurrent invoice requests at a running server.

Run ``scripts/init_db.py`` and start the app first.  Each thread bills one of
the workshop's open batches; all invoice numbers printed should be distinct.
"""

import random, threading, time, requests
from datetime import date, timedelta

BASE = "http://127.0.0.1:5000"
WORKSHOP_ID = 1

def open_batches():
    start = date.today().replace(day=1) - timedelta(days=31)
    end = date.today() + timedelta(days=31)
    r = requests.get(f"{BASE}/api/workshops/{WORKSHOP_ID}/unbilled",
                     params={"startDate": start.isoformat(), "endDate": end.isoformat()})
    r.raise_for_status()
    return [b["id"] for b in r.json()]

def bill(batch_id):
    time.sleep(random.uniform(0, 0.2))
    due = (date.today() + timedelta(days=30)).isoformat()
    r = requests.post(f"{BASE}/api/invoices", json={"workshopId": WORKSHOP_ID, "batchIds": [batch_id], "dueDate": due})
    body = r.json()
    print(batch_id, r.status_code, body.get("invoiceNumber") or body.get("error"))

threads = [threading.Thread(target=bill, args=(b,)) for b in open_batches()]
[t.start() for t in threads]
[t.join() for t in threads]
