"""Browser hosts for the capture engine (Playwright).

``playwright_host.PlaywrightHost`` adapts a Playwright page to the engine's
capability protocols; ``capture`` launches Chromium, navigates, and runs a
capture session; ``navigation`` retries ``goto`` with weaker wait strategies.
"""
