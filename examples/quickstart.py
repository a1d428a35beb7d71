"""keyceremony quickstart: passkey registration and login endpoints.

Run:
    KEYCEREMONY_RP_ID=localhost KEYCEREMONY_ORIGIN=http://localhost:5173 \
        uv run uvicorn examples.quickstart:app --reload

Open http://localhost:8000/docs to interact with the API.

Ceremony flow:
    1. POST /register/options {username}            -> creation options
    2. (browser) navigator.credentials.create(options)
    3. POST /register/verify {username, attResp}     -> {verified: true}
    4. POST /login/options {username}                -> request options
    5. (browser) navigator.credentials.get(options)
    6. POST /login/verify {username, authResp}       -> {verified: true}

Set KEYCEREMONY_STORE_BACKEND=sql to keep credentials across restarts.
"""

from keyceremony import create_app

app = create_app()
