"""Tests for the step catalog and the step list parser."""
import pytest

from gprproc.errors import ConfigurationError, ParseError, UnrecognizedStepError
from gprproc.gpr import GPR
from gprproc.steps import (
    DEFAULT_PROFILE,
    ProcessingStep,
    StepName,
    all_available_steps,
    base_name,
    default_processing_profile,
    default_with_topo_profile,
    parse_profile,
    parse_step,
    parse_step_list,
)


class TestParseStep:
    def test_with_parameter(self):
        step = parse_step("average_traces:5")
        assert step == ProcessingStep(StepName.AVERAGE_TRACES, ("5",))
        assert step.numeric_params() == [5]
        assert str(step) == "average_traces:5"

    def test_without_parameter(self):
        step = parse_step("abslog")
        assert step.name is StepName.ABSLOG
        assert step.params == ()

    def test_float_parameters(self):
        step = parse_step("bandpass:200:1200")
        assert step.numeric_params() == [200.0, 1200.0]

    def test_integer_written_as_float(self):
        assert parse_step("average_traces:4.0").params == ("4",)

    def test_whitespace_is_stripped(self):
        assert parse_step("  dewow : 7 ").token == "dewow:7"

    def test_unrecognized(self):
        with pytest.raises(UnrecognizedStepError, match="Unrecognized step: nonexistent_step") as info:
            parse_step("nonexistent_step")
        assert info.value.token == "nonexistent_step"

    def test_name_must_match_exactly(self):
        with pytest.raises(UnrecognizedStepError):
            parse_step("abslogx")
        with pytest.raises(UnrecognizedStepError):
            parse_step("xabslog")

    def test_wrong_parameter_count(self):
        with pytest.raises(ConfigurationError, match="takes 2 parameter"):
            parse_step("bandpass:200")
        with pytest.raises(ConfigurationError):
            parse_step("abslog:3")

    def test_wrong_parameter_type(self):
        with pytest.raises(ConfigurationError, match="expected int"):
            parse_step("average_traces:abc")
        with pytest.raises(ConfigurationError):
            parse_step("average_traces:2.5")

    def test_empty_parameter(self):
        with pytest.raises(ParseError):
            parse_step("dewow:")

    @pytest.mark.parametrize(
        "token", ["siglog:nan", "siglog:inf", "bandpass:0:inf", "zero_corr:-inf", "average_traces:nan"]
    )
    def test_non_finite_parameter(self, token):
        with pytest.raises(ConfigurationError):
            parse_step(token)

    @pytest.mark.parametrize(
        "token, message",
        [
            ("average_traces:1", "Window size"),
            ("average_traces:0", "Window size"),
            ("dewow:0", "Dewow window"),
            ("auto_gain:0", "gain bins"),
            ("bandpass:1200:200", "low < high"),
            ("bandpass:-5:200", "low < high"),
            ("bandpass:200:200", "low < high"),
            ("subset:20:10", "trace range"),
            ("subset:0:10:8:4", "sample range"),
            ("equidistant_traces:0", "Trace spacing"),
            ("normalize_horizontal_magnitudes:-1", "skip_first"),
        ],
    )
    def test_out_of_range_parameter(self, token, message):
        with pytest.raises(ConfigurationError, match=message):
            parse_step(token)

    @pytest.mark.parametrize(
        "token", ["average_traces:2", "dewow:1", "auto_gain:1", "bandpass:0:200", "subset:0:10:0:5"]
    )
    def test_boundary_parameters(self, token):
        assert parse_step(token).name.value == base_name(token)

    def test_error_hierarchy(self):
        assert issubclass(UnrecognizedStepError, ParseError)
        assert issubclass(ParseError, ConfigurationError)
        assert issubclass(ConfigurationError, ValueError)

    def test_base_name(self):
        assert base_name("subset:0:10") == "subset"
        assert base_name("abslog") == "abslog"


class TestParseStepList:
    def test_inline(self):
        steps = parse_step_list("dewow:5, abslog")
        assert [step.token for step in steps] == ["dewow:5", "abslog"]

    def test_average_traces_token_validates(self):
        assert len(parse_step_list("average_traces:5")) == 1

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_list(self, text):
        with pytest.raises(ParseError):
            parse_step_list(text)

    def test_empty_token(self):
        with pytest.raises(ParseError):
            parse_step_list("dewow,,abslog")

    def test_unknown_token_in_list(self):
        with pytest.raises(UnrecognizedStepError, match="Unrecognized step: bogus:3"):
            parse_step_list("dewow,bogus:3")

    def test_step_file(self, tmp_path):
        path = tmp_path / "steps.txt"
        path.write_text(
            "# Field season profile\n"
            "remove_empty_traces\n"
            "\n"
            "dewow:5  # low-cut\n"
            "average_traces:4\n"
        )
        steps = parse_step_list(str(path))
        assert [step.token for step in steps] == [
            "remove_empty_traces",
            "dewow:5",
            "average_traces:4",
        ]

    def test_step_file_without_steps(self, tmp_path):
        path = tmp_path / "steps.txt"
        path.write_text("# nothing here\n\n")
        with pytest.raises(ParseError):
            parse_step_list(str(path))


class TestCatalog:
    def test_every_step_listed(self):
        names = [name for name, _ in all_available_steps()]
        assert names == [step.value for step in StepName]
        assert all(description for _, description in all_available_steps())

    def test_every_step_has_a_method(self):
        for step in StepName:
            assert callable(getattr(GPR, step.value))

    def test_default_profile_parses(self):
        steps = parse_profile(default_processing_profile())
        assert [step.token for step in steps] == list(DEFAULT_PROFILE)

    def test_topo_profile_extends_default(self):
        assert default_with_topo_profile() == default_processing_profile() + ["correct_topography"]

    def test_default_profile_is_a_copy(self):
        profile = default_processing_profile()
        profile.append("abslog")
        assert default_processing_profile() == list(DEFAULT_PROFILE)
