import os
import sys
import uuid

import requests

API_URL = os.getenv("ASK_SMOKE_API_URL", "http://localhost:8000/api/v1/chat/ask")
PRODUCT = os.getenv("ASK_SMOKE_PRODUCT") or None

# (question, expect_ok) pairs; the policy question must never reach retrieval
QUERIES = [
    ("Does it run small?", True),
    ("What's your return policy?", True),
    ("Analyze what customers mention about the straps across reviews", True),
    ("Show reviews 3 stars or less that mention \"clasp\"", True),
]


def main() -> int:
    session_id = f"smoke-{uuid.uuid4().hex[:8]}"
    print(f"Ask smoke against {API_URL} (session={session_id}, product={PRODUCT or 'any'})")
    ok = True
    history = []
    for question, expect_ok in QUERIES:
        payload = {
            "question": question,
            "product": PRODUCT,
            "session_id": session_id,
            "history": history[-6:],
        }
        r = requests.post(API_URL, json=payload, timeout=90)
        if r.status_code != 200:
            print(f"FAIL {question!r}: {r.status_code} {r.text[:200]}")
            ok = False
            continue
        data = r.json()
        answer = str(data.get("answer") or "")
        suggestions = data.get("suggestions") or []
        print(f"- q={question!r}")
        print(f"  ok={data.get('ok')} evidence={len(data.get('evidence') or [])} suggestions={suggestions}")
        print(f"  answer={answer[:160]!r}")
        if not answer.strip() or len(suggestions) != 3 or bool(data.get("ok")) != expect_ok:
            ok = False
        history.extend([{"role": "user", "text": question}, {"role": "assistant", "text": answer}])
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
