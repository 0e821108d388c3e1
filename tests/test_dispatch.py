"""Unit tests for validating and executing actions."""

from subprocess import CompletedProcess
from unittest.mock import patch

import pytest

from aws_app.dispatch import ACTION_SPECS, dispatch, resolve_target
from aws_app.exceptions import (
    RemoteNotFoundError,
    RemotePermanentError,
    ValidationError,
)
from aws_app.table_fields import Action, ActionStatus, ResourceKind


def running_instance(instance_id, name, state="running"):
    return {
        "InstanceId": instance_id,
        "State": {"Name": state},
        "Tags": [{"Key": "Name", "Value": name}],
        "InstanceType": "m5.large",
    }


class TestValidation:
    """Malformed requests are rejected before any remote call."""

    def test_unknown_action(self, ctx, aws):
        with pytest.raises(ValidationError):
            dispatch(ctx, "fly-to-the-moon", "i-1")
        assert aws.clients == {}

    def test_empty_target(self, ctx, aws):
        with pytest.raises(ValidationError) as excinfo:
            dispatch(ctx, Action.TERMINATE_INSTANCE, "  ")
        assert excinfo.value.context["action"] == "terminate-instance"
        assert aws.clients == {}

    @pytest.mark.parametrize(
        "tags", [{}, {"Name": ""}, {"": "web"}, {"Name": "   "}]
    )
    def test_invalid_tags(self, ctx, aws, tags):
        with pytest.raises(ValidationError):
            dispatch(ctx, Action.TAG_RESOURCE, "i-1", {"tags": tags})
        assert aws.clients == {}

    def test_unknown_parameter(self, ctx, aws):
        with pytest.raises(ValidationError) as excinfo:
            dispatch(ctx, Action.CREATE_IMAGE, "i-1", {"name": "web", "foo": "bar"})
        assert "foo" in str(excinfo.value)
        assert aws.clients == {}

    def test_missing_parameter(self, ctx, aws):
        with pytest.raises(ValidationError):
            dispatch(ctx, Action.ADD_USER_TO_GROUP, "alice")
        assert aws.clients == {}

    def test_invalid_ip_address(self, ctx, aws):
        with pytest.raises(ValidationError):
            dispatch(
                ctx,
                Action.UPSERT_DNS_RECORD,
                "www.example.com",
                {"zone_id": "Z1", "ip_address": "300.1.1.1"},
            )
        assert aws.clients == {}

    def test_spot_price_above_the_limit(self, ctx, aws):
        with pytest.raises(ValidationError) as excinfo:
            dispatch(
                ctx,
                Action.REQUEST_SPOT,
                "ami-1",
                {"instance_type": "m5.large", "price": 0.5},
            )
        assert excinfo.value.context["max_spot_price"] == 0.2
        assert excinfo.value.context["target_id"] == "ami-1"
        assert "request_spot_instances" not in aws.client("ec2").operations

    def test_volume_cannot_shrink(self, ctx, aws):
        aws.respond("ec2", "describe_volumes", {"Volumes": [{"Size": 100}]})
        with pytest.raises(ValidationError):
            dispatch(ctx, Action.MODIFY_VOLUME, "vol-1", {"size": 50})
        assert "modify_volume" not in aws.client("ec2").operations

    def test_volume_needs_size_or_snapshot(self, ctx, aws):
        with pytest.raises(ValidationError):
            dispatch(ctx, Action.CREATE_VOLUME, "eu-west-1a")
        assert aws.clients == {}


class TestIdempotentDelete:
    """Destructive actions treat a missing target as success."""

    def test_terminate_missing_instance(self, ctx, aws, make_client_error):
        aws.respond(
            "ec2",
            "terminate_instances",
            make_client_error("InvalidInstanceID.NotFound"),
            make_client_error("InvalidInstanceID.NotFound"),
        )
        for _ in range(2):
            outcome = dispatch(ctx, Action.TERMINATE_INSTANCE, "i-1")
            assert outcome.status == ActionStatus.NOT_FOUND_TREATED_AS_SUCCESS
            assert outcome.target_id == "i-1"

    def test_delete_missing_ecr_image(self, ctx, aws):
        aws.respond(
            "ecr",
            "batch_delete_image",
            {
                "imageIds": [],
                "failures": [
                    {
                        "imageId": {"imageDigest": "sha256:1"},
                        "failureCode": "ImageNotFound",
                    }
                ],
            },
        )
        outcome = dispatch(
            ctx, Action.DELETE_ECR_IMAGE, "sha256:1", {"repository": "app"}
        )
        assert outcome.status == ActionStatus.NOT_FOUND_TREATED_AS_SUCCESS

    def test_delete_script_twice(self, ctx, config):
        outcome = dispatch(
            ctx, Action.WRITE_SCRIPT, "boot.sh", {"content": "#!/bin/bash\n"}
        )
        assert outcome.status == ActionStatus.SUCCESS
        assert (config.script_directory / "boot.sh").read_text() == "#!/bin/bash\n"
        statuses = [
            dispatch(ctx, Action.DELETE_SCRIPT, "boot.sh").status for _ in range(2)
        ]
        assert statuses == [
            ActionStatus.SUCCESS,
            ActionStatus.NOT_FOUND_TREATED_AS_SUCCESS,
        ]

    def test_not_found_on_constructive_action_is_an_error(
        self, ctx, aws, make_client_error
    ):
        aws.respond(
            "ec2", "create_tags", make_client_error("InvalidInstanceID.NotFound")
        )
        with pytest.raises(RemoteNotFoundError) as excinfo:
            dispatch(ctx, Action.TAG_RESOURCE, "i-1", {"tags": {"env": "prod"}})
        assert excinfo.value.context == {
            "action": "tag-resource",
            "target_id": "i-1",
        }


class TestExecution:
    def test_success_drops_response_metadata(self, ctx, aws):
        mock = aws.respond(
            "ec2", "create_tags", {"ResponseMetadata": {"HTTPStatusCode": 200}}
        )
        outcome = dispatch(ctx, Action.TAG_RESOURCE, "i-1", {"tags": {"env": "prod"}})
        assert outcome.status == ActionStatus.SUCCESS
        assert outcome.result == {}
        mock.assert_called_once_with(
            Resources=["i-1"], Tags=[{"Key": "env", "Value": "prod"}]
        )

    def test_permanent_error_carries_the_action(self, ctx, aws, make_client_error):
        aws.respond(
            "ec2", "terminate_instances", make_client_error("UnauthorizedOperation")
        )
        with pytest.raises(RemotePermanentError) as excinfo:
            dispatch(ctx, Action.TERMINATE_INSTANCE, "i-1")
        assert excinfo.value.context == {
            "action": "terminate-instance",
            "target_id": "i-1",
        }
        assert "action=terminate-instance" in str(excinfo.value)

    def test_terminate_by_name(self, ctx, aws):
        aws.respond(
            "ec2",
            "describe_instances",
            {
                "Reservations": [
                    {
                        "Instances": [
                            running_instance("i-abc", "web"),
                            running_instance("i-old", "web-old", state="stopped"),
                        ]
                    }
                ]
            },
        )
        mock = aws.respond("ec2", "terminate_instances", {"TerminatingInstances": []})
        outcome = dispatch(ctx, Action.TERMINATE_INSTANCE, "web")
        mock.assert_called_once_with(InstanceIds=["i-abc"])
        assert outcome.target_id == "web"

    def test_ids_are_not_resolved(self, ctx, aws):
        assert resolve_target(ctx, ResourceKind.VOLUME, "vol-123") == "vol-123"
        assert aws.clients == {}

    def test_modify_volume(self, ctx, aws):
        aws.respond("ec2", "describe_volumes", {"Volumes": [{"Size": 100}]})
        mock = aws.respond("ec2", "modify_volume", {"VolumeModification": {}})
        dispatch(ctx, Action.MODIFY_VOLUME, "vol-1", {"size": 200})
        mock.assert_called_once_with(VolumeId="vol-1", Size=200)

    def test_run_instance_with_default_user_data(self, ctx, aws):
        aws.respond(
            "ec2", "run_instances", {"Instances": [{"InstanceId": "i-new"}]}
        )
        tags = aws.respond("ec2", "create_tags", {})
        outcome = dispatch(
            ctx,
            Action.RUN_INSTANCE,
            "ami-1",
            {"instance_type": "t3.micro", "tags": {"Name": "web"}},
        )
        assert outcome.result == {"instance_ids": ["i-new"]}
        kwargs = aws.client("ec2").run_instances.call_args.kwargs
        assert kwargs["ImageId"] == "ami-1"
        assert kwargs["SecurityGroupIds"] == ["default"]
        assert "KeyName" not in kwargs
        tags.assert_called_once_with(
            Resources=["i-new"], Tags=[{"Key": "Name", "Value": "web"}]
        )

    def test_upsert_dns_record(self, ctx, aws):
        mock = aws.respond("route53", "change_resource_record_sets", {"ChangeInfo": {}})
        dispatch(
            ctx,
            Action.UPSERT_DNS_RECORD,
            "www.example.com",
            {"zone_id": "Z1", "ip_address": "10.0.0.1"},
        )
        batch = mock.call_args.kwargs["ChangeBatch"]["Changes"][0]
        assert batch["Action"] == "UPSERT"
        assert batch["ResourceRecordSet"]["ResourceRecords"] == [{"Value": "10.0.0.1"}]

    def test_script_names_cannot_escape(self, ctx):
        with pytest.raises(ValidationError):
            dispatch(ctx, Action.WRITE_SCRIPT, "../evil.sh", {"content": ""})

    def test_unmanaged_service(self, ctx):
        with pytest.raises(ValidationError):
            dispatch(ctx, Action.START_SERVICE, "sshd")

    def test_restart_service(self, ctx):
        with patch("aws_app.services.local.subprocess.run") as run:
            run.return_value = CompletedProcess([], 0, stdout="", stderr="")
            outcome = dispatch(ctx, Action.RESTART_SERVICE, "nginx")
        assert outcome.status == ActionStatus.SUCCESS
        assert run.call_args.args[0] == ["systemctl", "restart", "nginx"]


def test_every_action_has_a_spec():
    assert set(ACTION_SPECS) == set(Action)
