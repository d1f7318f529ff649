from rest_framework.routers import DefaultRouter

from apps.installments.views import InstallmentPaymentViewSet, InstallmentPlanViewSet

router = DefaultRouter()
router.register("installment-plans", InstallmentPlanViewSet, basename="installment-plan")
router.register("installment-payments", InstallmentPaymentViewSet, basename="installment-payment")

urlpatterns = router.urls
