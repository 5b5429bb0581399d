"""Submission payload validation at the HTTP boundary."""

import pytest
from pydantic import ValidationError

from xpl.progress.schemas import SubmitRequest


class TestSubmitRequest:

    def test_valid_payload(self):
        body = SubmitRequest.model_validate(
            {"results": [{"objective_key": "pod_exists", "passed": True}, {"objective_key": "pod_running", "passed": False, "message": "CrashLoopBackOff"}]}
        )
        assert len(body.results) == 2
        assert body.results[0].message is None
        assert body.results[1].message == "CrashLoopBackOff"

    def test_empty_results_rejected(self):
        with pytest.raises(ValidationError):
            SubmitRequest.model_validate({"results": []})

    def test_duplicate_keys_rejected(self):
        with pytest.raises(ValidationError, match="Duplicate objective keys: pod_exists"):
            SubmitRequest.model_validate(
                {"results": [{"objective_key": "pod_exists", "passed": True}, {"objective_key": "pod_exists", "passed": False}]}
            )

    def test_extra_fields_rejected(self):
        with pytest.raises(ValidationError):
            SubmitRequest.model_validate({"results": [{"objective_key": "a", "passed": True, "score": 3}]})
        with pytest.raises(ValidationError):
            SubmitRequest.model_validate({"results": [{"objective_key": "a", "passed": True}], "challengeSlug": "x"})

    def test_missing_passed_rejected(self):
        with pytest.raises(ValidationError):
            SubmitRequest.model_validate({"results": [{"objective_key": "a"}]})

    def test_blank_key_rejected(self):
        with pytest.raises(ValidationError):
            SubmitRequest.model_validate({"results": [{"objective_key": "", "passed": True}]})
