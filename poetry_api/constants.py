"""Poetry Foundation URLs, CSS selectors, and browser fingerprint defaults."""

# ── URLs ─────────────────────────────────────────────────────────────────────

POETRY_FOUNDATION_BASE = "https://www.poetryfoundation.org"
POEM_OF_THE_DAY_URL = f"{POETRY_FOUNDATION_BASE}/"
AUDIO_POEM_OF_THE_DAY_URL = f"{POETRY_FOUNDATION_BASE}/podcasts/series/74634/audio-pod"

# ── Cache ────────────────────────────────────────────────────────────────────

EPISODES_CACHE_KEY = "poetry-episodes"

# ── Browser Fingerprint ──────────────────────────────────────────────────────

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1920, "height": 1080}

# ── CSS Selectors ────────────────────────────────────────────────────────────

_POTD_SECTION = (
    "#mainContent > main > div > section.my-4.mb-7.border-t-4.border-gray-300.py-4 > div"
    " > div.col-span-full.flex.flex-col.md\\:col-span-3.md\\:gap-3"
)
_POTD_PLAYER = f"{_POTD_SECTION} > div.type-xi.flex.flex-wrap.gap-2.leading-\\[\\.8\\].text-black"

_AUDIO_POD_ARTICLE = (
    "#mainContent > article > div.flex.flex-col.gap-5.md\\:flex-row-reverse.md\\:gap-8 > div"
)

POEM_OF_THE_DAY_SELECTORS = {
    "title": f"{_POTD_SECTION} > div:nth-child(1) > h3 > div > a > span",
    "description": f"{_POTD_SECTION} > div.type-kappa.text-gray-600",
    "audio": f"{_POTD_PLAYER} > div > div > audio",
    "listen_button": f"{_POTD_PLAYER} > button > span",
}

AUDIO_POEM_OF_THE_DAY_SELECTORS = {
    "title": f"{_AUDIO_POD_ARTICLE} > header > h1 > p",
    "description": (
        f"{_AUDIO_POD_ARTICLE} > div.flex.flex-col.gap-4.sm\\:flex-row > div"
        " > div.copy-large.undefined.rich-text > p"
    ),
    "date": f"{_AUDIO_POD_ARTICLE} > header > time",
    "audio": f"{_AUDIO_POD_ARTICLE} > div.mb-6.grid.gap-6 > div > div > audio",
}

# ── Scrape Targets (declaration order is response order) ─────────────────────

SCRAPING_TARGETS = [
    {
        "name": "Poem of the Day",
        "url": POEM_OF_THE_DAY_URL,
        "selectors": POEM_OF_THE_DAY_SELECTORS,
    },
    {
        "name": "Audio Poem of the Day",
        "url": AUDIO_POEM_OF_THE_DAY_URL,
        "selectors": AUDIO_POEM_OF_THE_DAY_SELECTORS,
    },
]
