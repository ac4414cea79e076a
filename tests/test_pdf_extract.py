import unittest

import fitz

from doj_worker.pdf_extract import PdfText, extract_pdf_text


class TestExtractPdfText(unittest.TestCase):
    def test_text_pages_and_info(self):
        doc = fitz.open()
        for text in ("Flight log page one", "Flight log page two", "Flight log page three"):
            page = doc.new_page()
            page.insert_text((72, 72), text)
        doc.set_metadata({"title": "Logs", "author": "DOJ"})
        data = doc.tobytes()
        doc.close()

        result = extract_pdf_text(data)

        self.assertIsInstance(result, PdfText)
        self.assertEqual(result.pages, 3)
        self.assertIn("Flight log page one", result.text)
        self.assertIn("Flight log page three", result.text)
        self.assertEqual(result.info["title"], "Logs")
        self.assertEqual(result.info["author"], "DOJ")

    def test_blank_pdf(self):
        doc = fitz.open()
        doc.new_page()
        data = doc.tobytes()
        doc.close()

        result = extract_pdf_text(data)

        self.assertEqual(result.pages, 1)
        self.assertEqual(result.text, "")

    def test_non_pdf_raises(self):
        with self.assertRaises(Exception):
            extract_pdf_text(b"definitely not a pdf")


if __name__ == "__main__":
    unittest.main()
