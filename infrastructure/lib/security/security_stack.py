from aws_cdk import (
    Stack,
    aws_cloudfront as cloudfront,
    aws_cloudfront_origins as origins,
    aws_elasticloadbalancingv2 as elbv2,
    aws_iam as iam,
    aws_logs as logs,
    aws_secretsmanager as secretsmanager,
    aws_wafv2 as wafv2,
    CfnOutput,
    RemovalPolicy,
    Tags,
    Token,
)
from constructs import Construct

CUSTOM_HEADER_NAME = "X-CloudFront-Secret"
INGRESS_STACK_TAG = "ingress.eks.amazonaws.com/stack"
# CLOUDFRONT scoped web ACLs and their logging only exist in us-east-1
CLOUDFRONT_WAF_REGION = "us-east-1"


def _visibility_config(metric_name: str) -> wafv2.CfnWebACL.VisibilityConfigProperty:
    return wafv2.CfnWebACL.VisibilityConfigProperty(
        cloud_watch_metrics_enabled=True,
        metric_name=metric_name,
        sampled_requests_enabled=True,
    )


class SecurityStack(Stack):
    """
    Edge security in front of the sample application:
    - CloudFront distribution enforcing HTTPS and absorbing DDoS
    - WAF Web ACL on CloudFront with preventative controls on common threats
    - WAF Web ACL on the ALB blocking any request that bypassed CloudFront
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        ingress_stack_tag: str = "default/sample-app-ingress",
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        if not Token.is_unresolved(self.region) and self.region != CLOUDFRONT_WAF_REGION:
            raise ValueError(
                f"SecurityStack must be deployed to {CLOUDFRONT_WAF_REGION}, got {self.region}"
            )

        # ALB created by EKS Auto Mode for the sample app ingress
        alb = elbv2.ApplicationLoadBalancer.from_lookup(
            self,
            "ALB",
            load_balancer_tags={INGRESS_STACK_TAG: ingress_stack_tag},
        )

        custom_header_secret = secretsmanager.Secret(
            self,
            "CloudFrontHeaderSecret",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                exclude_punctuation=True,
                include_space=False,
                password_length=32,
            ),
        )
        custom_header_value = custom_header_secret.secret_value.unsafe_unwrap()

        # The ALB terminates at HTTP for the pods, CloudFront connects over HTTP
        alb_origin = origins.LoadBalancerV2Origin(
            alb,
            protocol_policy=cloudfront.OriginProtocolPolicy.HTTP_ONLY,
            custom_headers={CUSTOM_HEADER_NAME: custom_header_value},
        )

        # WAF ACL for the ALB: only requests carrying the CloudFront header pass
        alb_web_acl = wafv2.CfnWebACL(
            self,
            "AlbProtectionWebAcl",
            default_action=wafv2.CfnWebACL.DefaultActionProperty(
                block=wafv2.CfnWebACL.BlockActionProperty()
            ),
            scope="REGIONAL",
            visibility_config=_visibility_config("alb-waf-metric"),
            rules=[
                wafv2.CfnWebACL.RuleProperty(
                    name="AllowCloudFrontHeaderRule",
                    priority=1,
                    action=wafv2.CfnWebACL.RuleActionProperty(
                        allow=wafv2.CfnWebACL.AllowActionProperty()
                    ),
                    statement=wafv2.CfnWebACL.StatementProperty(
                        byte_match_statement=wafv2.CfnWebACL.ByteMatchStatementProperty(
                            field_to_match=wafv2.CfnWebACL.FieldToMatchProperty(
                                single_header={"Name": CUSTOM_HEADER_NAME}
                            ),
                            text_transformations=[
                                wafv2.CfnWebACL.TextTransformationProperty(
                                    priority=0, type="NONE"
                                )
                            ],
                            positional_constraint="EXACTLY",
                            search_string=custom_header_value,
                        )
                    ),
                    visibility_config=_visibility_config(
                        "allow-cloudfront-header-rule-metric"
                    ),
                )
            ],
        )
        wafv2.CfnWebACLAssociation(
            self,
            "WebAclAssociation",
            resource_arn=alb.load_balancer_arn,
            web_acl_arn=alb_web_acl.attr_arn,
        )

        # WAF ACL for CloudFront
        web_acl = wafv2.CfnWebACL(
            self,
            "CloudfrontWebAcl",
            default_action=wafv2.CfnWebACL.DefaultActionProperty(
                allow=wafv2.CfnWebACL.AllowActionProperty()
            ),
            scope="CLOUDFRONT",
            visibility_config=_visibility_config("CloudfrontWebAclMetric"),
            name="CloudfrontWebAcl",
            description="Web ACL for protecting the Cloudfront Distribution",
            rules=[
                wafv2.CfnWebACL.RuleProperty(
                    name="AWSManagedRulesCommonRuleSet",
                    priority=1,
                    statement=wafv2.CfnWebACL.StatementProperty(
                        managed_rule_group_statement=wafv2.CfnWebACL.ManagedRuleGroupStatementProperty(
                            vendor_name="AWS",
                            name="AWSManagedRulesCommonRuleSet",
                        )
                    ),
                    # Keep the actions of the managed rule group
                    override_action=wafv2.CfnWebACL.OverrideActionProperty(none={}),
                    visibility_config=_visibility_config(
                        "AWSManagedRulesCommonRuleSetMetric"
                    ),
                )
            ],
        )

        # WAF requires the log group name to start with aws-waf-logs-
        waf_log_group = logs.LogGroup(
            self,
            "WafAccessLogGroup",
            log_group_name="aws-waf-logs-cfacl",
            retention=logs.RetentionDays.ONE_MONTH,
            removal_policy=RemovalPolicy.DESTROY,
        )

        waf_logging_role = iam.Role(
            self,
            "WafLoggingRole",
            assumed_by=iam.ServicePrincipal("waf.amazonaws.com"),
            description="IAM role for AWS WAF to write logs to CloudWatch Logs",
        )
        waf_log_group.grant_write(waf_logging_role)
        waf_logging_role.add_to_policy(
            iam.PolicyStatement(
                actions=["logs:CreateLogStream", "logs:PutLogEvents"],
                resources=[waf_log_group.log_group_arn],
            )
        )

        wafv2.CfnLoggingConfiguration(
            self,
            "WebAclLoggingConfiguration",
            resource_arn=web_acl.attr_arn,
            log_destination_configs=[
                f"arn:aws:logs:{self.region}:{self.account}:log-group:{waf_log_group.log_group_name}"
            ],
        )

        distribution = cloudfront.Distribution(
            self,
            "CloudFrontDefaultCertDistribution",
            default_behavior=cloudfront.BehaviorOptions(
                origin=alb_origin,
                viewer_protocol_policy=cloudfront.ViewerProtocolPolicy.REDIRECT_TO_HTTPS,
                allowed_methods=cloudfront.AllowedMethods.ALLOW_ALL,
                cache_policy=cloudfront.CachePolicy.USE_ORIGIN_CACHE_CONTROL_HEADERS,
                response_headers_policy=cloudfront.ResponseHeadersPolicy.CORS_ALLOW_ALL_ORIGINS_AND_SECURITY_HEADERS,
            ),
            additional_behaviors={
                "/assets/*": cloudfront.BehaviorOptions(
                    origin=alb_origin,
                    viewer_protocol_policy=cloudfront.ViewerProtocolPolicy.REDIRECT_TO_HTTPS,
                    allowed_methods=cloudfront.AllowedMethods.ALLOW_GET_HEAD_OPTIONS,
                    cache_policy=cloudfront.CachePolicy.CACHING_OPTIMIZED,
                )
            },
            web_acl_id=web_acl.attr_arn,
        )

        Tags.of(self).add("Stack", "Security")

        # Outputs
        CfnOutput(
            self,
            "DistributionDomainName",
            value=distribution.distribution_domain_name,
            description="Domain name of the CloudFront distribution",
        )
