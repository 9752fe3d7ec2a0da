"""
bookin package

粵語 / English 書摘學習平台嘅後端。Run from `apps/backend`:

    uvicorn bookin.main:app

Do NOT put runtime logic here.
"""
