"""
Catalog Scraper

Drives a Chrome session against the catalog search page: sets the custom
dropdown filters by label, runs the search and reads back the found count
and a few item summaries. Also follows the newest matching item to its
deep link.

One long-lived WebDriver is shared by all searches. It is owned by a
single worker thread; the async methods submit work to that thread, so
the event loop never blocks on the browser. Each search runs in its own
tab, which is always closed afterwards.
"""

import time
import asyncio
import logging
import functools
from contextlib import contextmanager
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from selenium import webdriver
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.common.by import By
from selenium.webdriver.common.keys import Keys
from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.support.ui import WebDriverWait
from selenium.webdriver.support import expected_conditions as EC
from selenium.common.exceptions import (
    TimeoutException,
    WebDriverException,
    InvalidSessionIdException,
    ElementClickInterceptedException,
    ElementNotInteractableException,
    NoSuchWindowException,
)
from webdriver_manager.chrome import ChromeDriverManager

from monitoring.errors import ExtractionError
from monitoring.page_parser import parse_search_results, derive_item_link
from monitoring.page_selectors import (
    FILTER_FIELDS,
    DROPDOWN_BUTTON_STRATEGIES,
    DROPDOWN_SEARCH_INPUT_STRATEGIES,
    DROPDOWN_OPTION_STRATEGIES,
    SEARCH_BUTTON_STRATEGIES,
    RESULT_INDICATORS,
    OVERLAY_SELECTOR,
    OVERLAY_CLOSE_STRATEGIES,
    REMOVE_OVERLAYS_SCRIPT,
    RESULTS_GRID_SELECTORS,
    RESULT_CARD_SELECTOR,
    ITEM_LINK_SELECTOR,
    format_strategies,
)
from monitoring.schemas import ScraperStats

logger = logging.getLogger(__name__)

# Images, fonts and media are not needed to read the results
BLOCKED_URL_PATTERNS = [
    "*.png", "*.jpg", "*.jpeg", "*.gif", "*.webp", "*.svg", "*.ico",
    "*.woff", "*.woff2", "*.ttf", "*.otf",
    "*.mp4", "*.webm", "*.mp3", "*.ogg", "*.tgs", "*.lottie",
]

PAGE_READY_TIMEOUT = 10
NETWORK_IDLE_WINDOW = 0.5
RESULTS_TIMEOUT = 10
DROPDOWN_OPEN_DELAY = 1.0
OPTION_FILTER_DELAY = 1.5
DROPDOWN_CLOSE_DELAY = 0.5
RESULTS_SETTLE_DELAY = 1.0
OVERLAY_CLOSE_DELAY = 1.0
CARD_NAVIGATION_TIMEOUT = 5

_SESSION_LOST_MARKERS = ("invalid session id", "disconnected", "chrome not reachable", "session deleted")


def get_driver(headless=True, user_agent=None):
    """
    Get a configured Chrome driver.
    """
    chrome_options = Options()

    if headless:
        chrome_options.add_argument("--headless=new")

    # Critical flags for Docker environment
    chrome_options.add_argument("--no-sandbox")
    chrome_options.add_argument("--disable-setuid-sandbox")
    chrome_options.add_argument("--disable-dev-shm-usage")
    chrome_options.add_argument("--window-size=1920,1080")

    if user_agent:
        chrome_options.add_argument(f"--user-agent={user_agent}")
    chrome_options.add_argument("--disable-blink-features=AutomationControlled")
    chrome_options.add_experimental_option("excludeSwitches", ["enable-automation"])
    chrome_options.add_experimental_option("useAutomationExtension", False)

    driver = webdriver.Chrome(
        service=Service(ChromeDriverManager().install()), options=chrome_options
    )

    if user_agent:
        driver.execute_cdp_cmd("Network.setUserAgentOverride", {"userAgent": user_agent})

    # Hide the webdriver flag in every new document
    driver.execute_cdp_cmd(
        "Page.addScriptToEvaluateOnNewDocument",
        {"source": "Object.defineProperty(navigator, 'webdriver', {get: () => undefined})"},
    )

    return driver


def find_first(scope, strategies):
    """
    Return the first displayed element matched by an ordered strategy list.

    Strategies are tried lazily; later ones are never evaluated once one matches.

    Returns:
        tuple: (element, selector) or (None, None)
    """
    for by, selector in strategies:
        try:
            elements = scope.find_elements(by, selector)
        except WebDriverException as e:
            logger.debug(f"Selector failed {selector}: {e}")
            continue

        for element in elements:
            try:
                if element.is_displayed():
                    return element, selector
            except WebDriverException:
                continue

    return None, None


def _is_session_lost(error):
    if isinstance(error, (InvalidSessionIdException, NoSuchWindowException)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _SESSION_LOST_MARKERS)


class CatalogScraper:
    """
    Browser-backed catalog search.

    Args:
        config (ScraperConfig): Target URL, timeouts and browser options
        driver_factory (callable, optional): Builds a WebDriver; defaults to get_driver
    """

    def __init__(self, config, driver_factory=None):
        self.config = config
        self._driver_factory = driver_factory or get_driver
        self._driver = None
        self._base_handle = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="catalog-browser")

        self._total_requests = 0
        self._successful_requests = 0
        self._failed_requests = 0
        self._total_response_ms = 0.0
        self._last_request_time = None

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------

    async def start(self):
        """Launch the browser ahead of the first search."""
        await self._run(self._ensure_driver)
        logger.info("Browser session started")

    async def close(self):
        """Quit the browser and stop the browser thread."""
        try:
            await self._run(self._quit_driver)
        finally:
            self._executor.shutdown(wait=True)
            logger.info("Browser session closed")

    async def search(self, criteria):
        """
        Run one catalog search.

        Returns:
            SearchResult: Found count and up to ten item summaries

        Raises:
            ExtractionError: On any navigation, selector or timeout failure
        """
        logger.info(f"Searching catalog: {criteria.describe()}")
        return await self._timed("SEARCH_FAILED", self._search_sync, criteria)

    async def latest_item_link(self, criteria):
        """
        Get the deep link of the most recently listed matching item.

        Returns:
            str or None: Deep link, None if no item could be opened

        Raises:
            ExtractionError: If the search itself fails
        """
        logger.info(f"Fetching latest item link: {criteria.describe()}")
        return await self._timed("LINK_EXTRACTION_FAILED", self._latest_item_link_sync, criteria)

    def get_stats(self):
        average = self._total_response_ms / self._total_requests if self._total_requests else 0.0
        return ScraperStats(
            total_requests=self._total_requests,
            successful_requests=self._successful_requests,
            failed_requests=self._failed_requests,
            average_response_time_ms=average,
            last_request_time=self._last_request_time,
        )

    def reset_stats(self):
        self._total_requests = 0
        self._successful_requests = 0
        self._failed_requests = 0
        self._total_response_ms = 0.0
        self._last_request_time = None

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args))

    async def _timed(self, error_code, fn, criteria):
        start_time = time.perf_counter()
        try:
            result = await self._run(fn, criteria)
        except ExtractionError as e:
            self._record(False, start_time)
            logger.error(f"Catalog request failed: {e}")
            raise
        except Exception as e:
            self._record(False, start_time)
            logger.error(f"Catalog request failed: {e}")
            raise ExtractionError(error_code, str(e)) from e

        elapsed_ms = self._record(True, start_time)
        logger.info(f"Catalog request finished in {elapsed_ms:.0f}ms")
        return result

    def _record(self, success, start_time):
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self._total_requests += 1
        if success:
            self._successful_requests += 1
        else:
            self._failed_requests += 1
        self._total_response_ms += elapsed_ms
        self._last_request_time = datetime.now()
        return elapsed_ms

    # ------------------------------------------------------------------
    # Browser thread
    # ------------------------------------------------------------------

    def _ensure_driver(self):
        if self._driver is None:
            try:
                self._driver = self._driver_factory(
                    headless=self.config.headless, user_agent=self.config.user_agent
                )
            except WebDriverException as e:
                raise ExtractionError("BROWSER_UNAVAILABLE", f"Could not start browser: {e}") from e
            self._driver.set_page_load_timeout(self.config.timeout_ms / 1000)
            self._base_handle = self._driver.current_window_handle
        return self._driver

    def _quit_driver(self):
        if self._driver is not None:
            try:
                self._driver.quit()
            except WebDriverException as e:
                logger.warning(f"Error quitting browser: {e}")
            finally:
                self._driver = None
                self._base_handle = None

    @contextmanager
    def _isolated_tab(self):
        driver = self._ensure_driver()
        try:
            driver.switch_to.new_window("tab")
        except WebDriverException as e:
            if _is_session_lost(e):
                logger.warning("Browser session lost, relaunching on next request")
                self._quit_driver()
            raise

        tab_handle = driver.current_window_handle
        try:
            self._block_resources(driver)
            yield driver
        except WebDriverException as e:
            if _is_session_lost(e):
                logger.warning("Browser session lost, relaunching on next request")
                self._quit_driver()
            raise
        finally:
            if self._driver is driver:
                try:
                    if tab_handle in driver.window_handles:
                        driver.switch_to.window(tab_handle)
                        driver.close()
                    driver.switch_to.window(self._base_handle)
                except WebDriverException as e:
                    logger.warning(f"Could not close search tab: {e}")
                    if _is_session_lost(e):
                        self._quit_driver()

    def _block_resources(self, driver):
        try:
            driver.execute_cdp_cmd("Network.enable", {})
            driver.execute_cdp_cmd("Network.setBlockedURLs", {"urls": BLOCKED_URL_PATTERNS})
        except (WebDriverException, AttributeError) as e:
            logger.debug(f"Resource blocking unavailable: {e}")

    def _search_sync(self, criteria):
        with self._isolated_tab() as driver:
            self._perform_search(driver, criteria)
            return parse_search_results(driver.page_source, criteria)

    def _latest_item_link_sync(self, criteria):
        with self._isolated_tab() as driver:
            self._perform_search(driver, criteria)
            return self._open_latest_item(driver)

    def _perform_search(self, driver, criteria):
        self._open_search_page(driver)
        self._fill_filters(driver, criteria)
        self._click_search(driver)
        self._wait_for_results(driver)

    def _open_search_page(self, driver):
        logger.debug(f"Navigating to {self.config.base_url}")
        try:
            driver.get(self.config.base_url)
        except TimeoutException as e:
            raise ExtractionError(
                "NAVIGATION_TIMEOUT",
                f"Timed out loading {self.config.base_url} after {self.config.timeout_ms}ms",
            ) from e

        self._wait_for_network_idle(driver)

        try:
            WebDriverWait(driver, PAGE_READY_TIMEOUT).until(
                EC.presence_of_element_located((By.CSS_SELECTOR, "input, select, button"))
            )
        except TimeoutException as e:
            raise ExtractionError("PAGE_NOT_READY", "Search form did not render") from e

    def _wait_for_network_idle(self, driver):
        """
        Wait until the document is complete and no new resources were
        requested for NETWORK_IDLE_WINDOW seconds.
        """
        deadline = time.monotonic() + self.config.timeout_ms / 1000
        last_count = -1
        stable_since = time.monotonic()

        while time.monotonic() < deadline:
            state, count = driver.execute_script(
                "return [document.readyState, performance.getEntriesByType('resource').length];"
            )
            now = time.monotonic()
            if count != last_count:
                last_count = count
                stable_since = now
            elif state == "complete" and now - stable_since >= NETWORK_IDLE_WINDOW:
                return
            time.sleep(0.1)

        logger.warning("Page did not reach network idle, continuing")

    def _fill_filters(self, driver, criteria):
        for field in FILTER_FIELDS:
            value = getattr(criteria, field.name)
            if value:
                self._select_filter(driver, field, value)

    def _select_filter(self, driver, field, value):
        """
        Open a dropdown-search widget, type the value and pick the matching option.

        A control that cannot be found or set is skipped: the search then
        simply runs with a broader filter.
        """
        strategies = format_strategies(
            DROPDOWN_BUTTON_STRATEGIES, placeholder=field.placeholder, label=field.label
        )
        button, selector = find_first(driver, strategies)
        if button is None:
            logger.warning(f"{field.label} dropdown not found, skipping filter {value!r}")
            return
        logger.debug(f"{field.label} dropdown found via {selector}")

        try:
            self._click(driver, button)
            time.sleep(DROPDOWN_OPEN_DELAY)

            search_input, _ = find_first(driver, DROPDOWN_SEARCH_INPUT_STRATEGIES)
            if search_input is None:
                logger.warning(f"{field.label} search input not found, skipping filter {value!r}")
                return

            search_input.clear()
            search_input.send_keys(value)
            time.sleep(OPTION_FILTER_DELAY)

            option, _ = find_first(driver, format_strategies(DROPDOWN_OPTION_STRATEGIES, value=value))
            if option is None:
                visible = [
                    o.text.strip()
                    for o in driver.find_elements(By.CSS_SELECTOR, "[role='option'], div[class*='cursor-pointer']")[:5]
                    if o.text.strip()
                ]
                logger.warning(f"Option {value!r} not found in {field.label}; first options: {visible}")
                return

            self._click(driver, option)
            logger.debug(f"Selected {field.label}: {value}")
        except WebDriverException as e:
            if _is_session_lost(e):
                raise
            logger.warning(f"Could not set {field.label} to {value!r}: {e}")
        finally:
            self._close_dropdown(driver)

    def _close_dropdown(self, driver):
        try:
            ActionChains(driver).send_keys(Keys.ESCAPE).perform()
            time.sleep(DROPDOWN_CLOSE_DELAY)
        except WebDriverException as e:
            if _is_session_lost(e):
                raise
            logger.debug(f"Could not close dropdown: {e}")

    def _click(self, driver, element):
        try:
            element.click()
        except (ElementClickInterceptedException, ElementNotInteractableException):
            driver.execute_script("arguments[0].click();", element)

    def _click_search(self, driver):
        button, selector = find_first(driver, format_strategies(SEARCH_BUTTON_STRATEGIES))
        if button is None:
            raise ExtractionError("SEARCH_BUTTON_NOT_FOUND", "Search button not found")

        logger.debug(f"Search button found via {selector}")
        self._click(driver, button)

    def _wait_for_results(self, driver):
        def results_visible(d):
            return any(d.find_elements(by, selector) for by, selector in RESULT_INDICATORS)

        try:
            WebDriverWait(driver, RESULTS_TIMEOUT).until(results_visible)
        except TimeoutException:
            logger.warning("No results indicator appeared, treating page as empty")
            return

        time.sleep(RESULTS_SETTLE_DELAY)

    def _dismiss_overlay(self, driver):
        if not driver.find_elements(By.CSS_SELECTOR, OVERLAY_SELECTOR):
            return

        logger.debug("Closing subscription overlay")
        closed = False
        for by, selector in OVERLAY_CLOSE_STRATEGIES:
            close_button, _ = find_first(driver, [(by, selector)])
            if close_button is None:
                continue
            try:
                self._click(driver, close_button)
                time.sleep(OVERLAY_CLOSE_DELAY)
                closed = True
                break
            except WebDriverException as e:
                if _is_session_lost(e):
                    raise
                continue

        if not closed:
            ActionChains(driver).send_keys(Keys.ESCAPE).perform()
            time.sleep(OVERLAY_CLOSE_DELAY)

        if driver.find_elements(By.CSS_SELECTOR, OVERLAY_SELECTOR):
            driver.execute_script(REMOVE_OVERLAYS_SCRIPT)
            logger.debug("Overlay removed from the DOM")

    def _open_latest_item(self, driver):
        self._dismiss_overlay(driver)

        cards = []
        for selector in RESULTS_GRID_SELECTORS:
            for grid in driver.find_elements(By.CSS_SELECTOR, selector):
                cards = grid.find_elements(By.CSS_SELECTOR, RESULT_CARD_SELECTOR)
                if cards:
                    break
            if cards:
                break

        if not cards:
            logger.warning("No result cards found, cannot open latest item")
            return None

        url_before = driver.current_url
        last_card = cards[-1]
        driver.execute_script("arguments[0].scrollIntoView({block: 'center'});", last_card)
        self._click(driver, last_card)

        try:
            WebDriverWait(driver, CARD_NAVIGATION_TIMEOUT).until(
                lambda d: d.current_url != url_before or d.find_elements(By.CSS_SELECTOR, ITEM_LINK_SELECTOR)
            )
        except TimeoutException:
            logger.debug("Item detail view did not load a link in time")

        link = derive_item_link(driver.page_source, driver.current_url, self.config.item_link_base)
        if link:
            logger.info(f"Latest item link: {link}")
        else:
            logger.warning("Item deep link not found")
        return link
