import django_filters

from .models import Order

SORT_FIELDS = {
    'createdAt': 'created_at',
    'totalMoney': 'total_money',
    'status': 'status',
}


class OrderFilter(django_filters.FilterSet):
    """
    `?status=&paymentStatus=&fromDate=&toDate=&sortBy=&sortOrder=`
    Date bounds are inclusive calendar days.
    """
    status = django_filters.ChoiceFilter(choices=Order.Status.choices)
    paymentStatus = django_filters.ChoiceFilter(field_name='payment_status', choices=Order.PaymentStatus.choices)
    fromDate = django_filters.DateFilter(field_name='created_at', lookup_expr='date__gte')
    toDate = django_filters.DateFilter(field_name='created_at', lookup_expr='date__lte')
    sortBy = django_filters.ChoiceFilter(choices=[(k, k) for k in SORT_FIELDS], method='filter_noop')
    sortOrder = django_filters.ChoiceFilter(choices=[('asc', 'asc'), ('desc', 'desc')], method='filter_noop')

    class Meta:
        model = Order
        fields = ['status', 'paymentStatus', 'fromDate', 'toDate']

    def filter_noop(self, queryset, name, value):
        return queryset

    def filter_queryset(self, queryset):
        queryset = super().filter_queryset(queryset)
        sort_by = self.form.cleaned_data.get('sortBy') or 'createdAt'
        sort_order = self.form.cleaned_data.get('sortOrder') or 'desc'
        field = SORT_FIELDS[sort_by]
        prefix = '-' if sort_order == 'desc' else ''
        # Tie-break on pk so pages are stable
        return queryset.order_by(f'{prefix}{field}', f'{prefix}pk')
