"""
Catalog Page Selectors

The catalog's filter widgets are custom dropdown-search components without
stable ids, so every lookup is an ordered list of (By, selector) strategies.
The first strategy that yields a displayed element wins. Templates are
formatted with {placeholder}, {label} or {value} (values are XPath literals).
"""

from collections import namedtuple

from selenium.webdriver.common.by import By

FilterField = namedtuple("FilterField", ["name", "label", "placeholder"])

# Order matters: item name first, refinements after it
FILTER_FIELDS = (
    FilterField("item_name", "Gift", "All gifts"),
    FilterField("model", "Model", "All models"),
    FilterField("background", "Background", "All backgrounds"),
    FilterField("pattern", "Pattern", "All patterns"),
)

DROPDOWN_BUTTON_STRATEGIES = (
    (By.XPATH, "//button[@aria-haspopup='listbox'][contains(normalize-space(.), {placeholder})]"),
    (By.XPATH, "//button[@type='button'][contains(normalize-space(.), {placeholder})]"),
    (By.XPATH, "//button[.//span[contains(normalize-space(.), {placeholder})]]"),
    (By.XPATH, "//button[contains(normalize-space(.), {placeholder})]"),
    (By.XPATH, "//div[label[contains(normalize-space(.), {label})]]//button[@type='button']"),
    (By.XPATH, "//div[label[contains(normalize-space(.), {label})]]//button"),
)

DROPDOWN_SEARCH_INPUT_STRATEGIES = (
    (By.CSS_SELECTOR, "div[role='listbox'] input[placeholder='Search...']"),
    (By.CSS_SELECTOR, "input[type='text'][placeholder='Search...']"),
    (By.CSS_SELECTOR, "input[placeholder='Search...']"),
    (By.CSS_SELECTOR, "input[class*='bg-gray-700']"),
)

DROPDOWN_OPTION_STRATEGIES = (
    (By.XPATH, "//*[@role='option'][normalize-space(.)={value}]"),
    (By.XPATH, "//*[@role='option'][.//*[normalize-space(.)={value}]]"),
    (By.XPATH, "//div[contains(@class, 'cursor-pointer')][normalize-space(.)={value}]"),
    (By.XPATH, "//*[@role='option'][contains(normalize-space(.), {value})]"),
    (By.XPATH, "//div[contains(@class, 'cursor-pointer')][contains(normalize-space(.), {value})]"),
)

SEARCH_BUTTON_STRATEGIES = (
    (By.XPATH, "//button[contains(normalize-space(.), 'Find')]"),
    (By.XPATH, "//button[contains(normalize-space(.), 'Найти')]"),
    (By.XPATH, "//button[contains(normalize-space(.), 'Search')]"),
    (By.CSS_SELECTOR, "button[type='submit']"),
    (By.CSS_SELECTOR, "[data-testid*='search' i]"),
    (By.CSS_SELECTOR, "button[class*='search' i]"),
)

# Any of these means the results area has rendered
RESULT_INDICATORS = (
    (By.CSS_SELECTOR, "span.font-medium.text-white"),
    (By.XPATH, "//*[contains(text(), 'Found') or contains(text(), 'Найдено')]"),
    (By.CSS_SELECTOR, "[class*='result' i]"),
    (By.CSS_SELECTOR, "[data-testid*='result' i]"),
    (By.CSS_SELECTOR, "[class*='gift' i]"),
    (By.CSS_SELECTOR, "[class*='item' i]"),
)

OVERLAY_SELECTOR = "#subscribe-modal-portal"

OVERLAY_CLOSE_STRATEGIES = (
    (By.CSS_SELECTOR, "button[aria-label='Close']"),
    (By.CSS_SELECTOR, "button[aria-label='close']"),
    (By.XPATH, "//button[normalize-space(.)='×' or normalize-space(.)='✕']"),
    (By.CSS_SELECTOR, "button[class*='close' i]"),
    (By.CSS_SELECTOR, "[data-testid='close']"),
    (By.CSS_SELECTOR, ".close-button"),
    (By.XPATH, "//button[@type='button'][.//*[local-name()='svg']]"),
)

# Removes leftover overlays that would intercept clicks
REMOVE_OVERLAYS_SCRIPT = """
document.querySelectorAll(
    '#subscribe-modal-portal, [id*="modal"], [class*="modal"], [id*="subscribe"], '
    + '[class*="overlay"], [class*="backdrop"]'
).forEach(function (node) { node.remove(); });
"""

RESULTS_GRID_SELECTORS = (
    "div.grid.grid-cols-3.mb-5",
    "div.grid.mb-5",
    "div.grid",
)

RESULT_CARD_SELECTOR = ":scope > div"

# BeautifulSoup (soupsieve) selectors used on the rendered page source
COUNT_SELECTOR = "span.font-medium.text-white"
COUNT_FALLBACK_SELECTORS = ("[class*='count' i]", "[data-testid*='count' i]")
ITEM_CARD_SELECTORS = ("[class*='gift' i]", "[class*='item' i]", "[data-testid*='gift' i]")
ITEM_IMAGE_SELECTORS = (
    "img[src*='gift']",
    "img[alt*='gift' i]",
    "[class*='gift' i] img",
    "[class*='item' i] img",
)
ITEM_NAME_SELECTOR = "h1, h2, h3, [class*='name' i], [class*='title' i]"
ITEM_RARITY_SELECTOR = "[class*='rarity' i], [class*='percent' i]"
ITEM_LINK_SELECTOR = "a[href*='t.me/nft/']"


def xpath_literal(value):
    """
    Quote a string for use inside an XPath expression.

    XPath 1.0 has no escape sequences, so strings holding both quote
    characters are built with concat().
    """
    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    parts = value.split("'")
    return "concat(" + ", \"'\", ".join(f"'{part}'" for part in parts) + ")"


def format_strategies(strategies, **values):
    """
    Fill the templates of a strategy list.

    Values are XPath-quoted for XPath strategies and left raw for CSS.
    """
    formatted = []
    for by, template in strategies:
        if by == By.XPATH:
            quoted = {key: xpath_literal(val) for key, val in values.items()}
            formatted.append((by, template.format(**quoted)))
        else:
            formatted.append((by, template.format(**values)))
    return formatted
