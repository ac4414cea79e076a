import base64
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import fitz
from playwright.async_api import Error as PlaywrightError

from doj_worker import handlers
from doj_worker.errors import WorkerError
from doj_worker.ssrf import JusticeGovUrlError

PDF_URL = "https://www.justice.gov/epstein/files/doc-001.pdf"


def _make_pdf(*page_texts, title="Test Doc"):
    doc = fitz.open()
    for text in page_texts:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    doc.set_metadata({"title": title})
    data = doc.tobytes()
    doc.close()
    return data


def _page(evaluate_result, url=PDF_URL):
    page = AsyncMock()
    page.url = url
    page.evaluate = AsyncMock(return_value=evaluate_result)
    button = AsyncMock()
    page.get_by_role = MagicMock(return_value=button)
    return page, button


def _pool(page):
    pool = MagicMock()
    pool.context.new_page = AsyncMock(return_value=page)
    return pool


class TestHandleAnalyzeValidation(unittest.IsolatedAsyncioTestCase):
    async def test_missing_file_uri(self):
        get_pool = AsyncMock()
        with patch.object(handlers, "get_pool", get_pool):
            with self.assertRaises(WorkerError) as ctx:
                await handlers.handle_analyze(None)
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.message, "fileUri is required")
        get_pool.assert_not_awaited()

    async def test_ssrf_rejections_happen_before_browser_work(self):
        get_pool = AsyncMock()
        cases = {
            "http://www.justice.gov/a.pdf": 400,
            "https://127.0.0.1/justice.gov/a.pdf": 400,
            "https://www.justice.gov:8443/a.pdf": 400,
            "https://evil.com/www.justice.gov/a.pdf": 403,
            "https://localhost/justice.gov": 403,
        }
        with patch.object(handlers, "get_pool", get_pool):
            for url, status in cases.items():
                with self.subTest(url=url):
                    with self.assertRaises(JusticeGovUrlError) as ctx:
                        await handlers.handle_analyze(url)
                    self.assertEqual(ctx.exception.status_code, status)
        get_pool.assert_not_awaited()


class TestHandleAnalyze(unittest.IsolatedAsyncioTestCase):
    async def test_extracts_text_pages_and_metadata(self):
        pdf = _make_pdf("First page text", "Second page text")
        page, button = _page({"error": False, "data": base64.b64encode(pdf).decode("ascii")})

        with patch.object(handlers, "get_pool", AsyncMock(return_value=_pool(page))):
            result = await handlers.handle_analyze(PDF_URL)

        self.assertIn("First page text", result["text"])
        self.assertIn("Second page text", result["text"])
        self.assertEqual(result["pages"], 2)
        self.assertEqual(result["metadata"]["fileSize"], len(pdf))
        self.assertTrue(result["metadata"]["extractedAt"].endswith("Z"))
        self.assertEqual(result["metadata"]["info"]["title"], "Test Doc")

        self.assertEqual(page.goto.await_args.args[0], PDF_URL)
        self.assertEqual(page.goto.await_args.kwargs["wait_until"], "domcontentloaded")
        _script, arg = page.evaluate.await_args.args
        self.assertEqual(arg["url"], PDF_URL)
        button.click.assert_not_awaited()
        page.close.assert_awaited_once()

    async def test_age_gate_is_clicked_through(self):
        pdf = _make_pdf("Behind the gate")
        page, button = _page(
            {"error": False, "data": base64.b64encode(pdf).decode("ascii")},
            url="https://www.justice.gov/age-verify?destination=/epstein/files/doc-001.pdf",
        )

        with patch.object(handlers, "get_pool", AsyncMock(return_value=_pool(page))):
            result = await handlers.handle_analyze(PDF_URL)

        button.click.assert_awaited_once()
        page.wait_for_url.assert_awaited_once()
        self.assertIn("Behind the gate", result["text"])

    async def test_missing_age_gate_button_is_tolerated(self):
        pdf = _make_pdf("Cookies already set")
        page, button = _page(
            {"error": False, "data": base64.b64encode(pdf).decode("ascii")},
            url="https://www.justice.gov/age-verify",
        )
        button.click.side_effect = PlaywrightError("Timeout 15000ms exceeded")

        with patch.object(handlers, "get_pool", AsyncMock(return_value=_pool(page))):
            result = await handlers.handle_analyze(PDF_URL)

        self.assertIn("Cookies already set", result["text"])

    async def test_download_failure_reports_upstream_status(self):
        page, _button = _page({"error": True, "status": 403, "statusText": "Forbidden", "body": ""})

        with patch.object(handlers, "get_pool", AsyncMock(return_value=_pool(page))):
            with self.assertRaises(WorkerError) as ctx:
                await handlers.handle_analyze(PDF_URL)

        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.message, "PDF download failed: 403 Forbidden")
        page.close.assert_awaited_once()

    async def test_unparseable_pdf_is_500(self):
        page, _button = _page({"error": False, "data": base64.b64encode(b"<html>not a pdf</html>").decode("ascii")})

        with patch.object(handlers, "get_pool", AsyncMock(return_value=_pool(page))):
            with self.assertRaises(WorkerError) as ctx:
                await handlers.handle_analyze(PDF_URL)

        self.assertEqual(ctx.exception.status_code, 500)
        page.close.assert_awaited_once()

    async def test_navigation_failure_is_500_and_page_closed(self):
        page, _button = _page({"error": False, "data": ""})
        page.goto.side_effect = PlaywrightError("net::ERR_TIMED_OUT")

        with patch.object(handlers, "get_pool", AsyncMock(return_value=_pool(page))):
            with self.assertRaises(WorkerError) as ctx:
                await handlers.handle_analyze(PDF_URL)

        self.assertIn("ERR_TIMED_OUT", ctx.exception.message)
        page.close.assert_awaited_once()


if __name__ == "__main__":
    unittest.main()
