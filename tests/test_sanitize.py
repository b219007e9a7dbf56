from centaur.core.sanitize import (
    GENERIC_ERROR_MESSAGE,
    build_storage_path,
    is_valid_uuid,
    sanitize_error_message,
    sanitize_filename,
    validate_storage_path,
    validate_upload,
)


class TestErrorMessages:
    def test_curated_messages_pass_through(self):
        assert sanitize_error_message("RFQ not found") == "RFQ not found"
        assert sanitize_error_message("Already responded to this RFQ") == "Already responded to this RFQ"
        assert sanitize_error_message("Please wait 12 more seconds (tier delay)").startswith("Please wait")

    def test_database_errors_are_replaced(self):
        msg = 'duplicate key value violates unique constraint "uq_rfq_response_provider"'
        assert sanitize_error_message(msg) == GENERIC_ERROR_MESSAGE

    def test_driver_name_beats_safe_fragment(self):
        msg = "sqlalchemy.exc.IntegrityError: record not found"
        assert sanitize_error_message(msg) == GENERIC_ERROR_MESSAGE

    def test_sql_text_is_replaced(self):
        assert sanitize_error_message("SELECT id FROM users WHERE x cannot") == GENERIC_ERROR_MESSAGE

    def test_unknown_and_empty(self):
        assert sanitize_error_message("KeyError: 'foundry'") == GENERIC_ERROR_MESSAGE
        assert sanitize_error_message("") == GENERIC_ERROR_MESSAGE
        assert sanitize_error_message(None) == GENERIC_ERROR_MESSAGE


class TestFilenames:
    def test_traversal_removed(self):
        assert sanitize_filename("../../etc/passwd") == "etcpasswd"

    def test_collapsing_dots_cannot_rebuild_traversal(self):
        assert ".." not in sanitize_filename("....//....//x")
        for name in ("./.", ".\\.", "a./.b", ".././..\\.."):
            assert ".." not in sanitize_filename(name)
        assert sanitize_filename("a./.b") == "ab"

    def test_forbidden_characters_replaced(self):
        assert sanitize_filename("bracket drawing (v2).pdf") == "bracket_drawing__v2_.pdf"

    def test_length_capped(self):
        assert len(sanitize_filename("a" * 500 + ".pdf")) == 200

    def test_storage_path_is_scoped(self):
        path = build_storage_path("f1", "u1", "../spec sheet.pdf", 1700000000000)
        assert path == "rfq/f1/u1/1700000000000_spec_sheet.pdf"


class TestStoragePaths:
    def test_own_prefix_allowed(self):
        assert validate_storage_path("rfq/f1/u1/123_a.pdf", "f1", "u1")

    def test_other_user_rejected(self):
        assert not validate_storage_path("rfq/f1/u2/123_a.pdf", "f1", "u1")

    def test_owner_can_delete_dotted_upload(self):
        path = build_storage_path("f1", "u1", "./.pdf", 1)
        assert path == "rfq/f1/u1/1_pdf"
        assert validate_storage_path(path, "f1", "u1")

    def test_traversal_rejected(self):
        assert not validate_storage_path("rfq/f1/u1/../u2/123_a.pdf", "f1", "u1")
        assert not validate_storage_path("rfq/f1/u1//123_a.pdf", "f1", "u1")
        assert not validate_storage_path("", "f1", "u1")


class TestUploadValidation:
    def test_accepts_pdf(self):
        assert validate_upload("drawing.pdf", "application/pdf", 1024) is None

    def test_cad_with_octet_stream(self):
        assert validate_upload("part.STEP", "application/octet-stream", 1024) is None

    def test_size_limit(self):
        assert validate_upload("a.pdf", "application/pdf", 26 * 1024 * 1024) == "File size exceeds 25MB limit"
        assert validate_upload("a.pdf", "application/pdf", 2048, max_bytes=1024 * 1024 * 1) is None
        assert validate_upload("a.pdf", "application/pdf", 3 * 1024 * 1024, max_bytes=2 * 1024 * 1024) == \
            "File size exceeds 2MB limit"

    def test_extension_allowlist(self):
        assert validate_upload("run.exe", "application/octet-stream", 10).startswith("File type not allowed")
        assert validate_upload("noext", "application/pdf", 10).startswith("File type not allowed")

    def test_mime_allowlist(self):
        assert validate_upload("a.pdf", "text/html", 10) == "Invalid file type"


class TestUuid:
    def test_valid(self):
        assert is_valid_uuid("3f2b8c1e-9d4a-4f6b-8a2c-1e5d7f9b0c3a")
        assert is_valid_uuid("3F2B8C1E-9D4A-4F6B-8A2C-1E5D7F9B0C3A")

    def test_invalid(self):
        assert not is_valid_uuid(None)
        assert not is_valid_uuid("")
        assert not is_valid_uuid("acme")
        assert not is_valid_uuid("3f2b8c1e-9d4a-4f6b-8a2c-1e5d7f9b0c3a; drop")
